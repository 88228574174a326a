"""Background workers: trigger consumer and scheduled jobs."""
