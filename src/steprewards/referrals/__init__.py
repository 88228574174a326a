"""Onboarding and referral completion."""
