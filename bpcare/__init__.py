"""Core domain logic for blood-pressure tracking with AI advice.

This package contains the business logic and domain models,
isolated from storage and delivery adapters for easy testing and reasoning.
"""
