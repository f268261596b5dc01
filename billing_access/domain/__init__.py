"""Domain models and services: tenants, memberships, authorization, schedules."""
