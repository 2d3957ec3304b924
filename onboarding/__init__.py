"""Onboarding wizard service: session state machine and resume protocol."""
