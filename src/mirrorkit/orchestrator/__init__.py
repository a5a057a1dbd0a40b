"""Provisioning orchestrator: registry, seeder, prober, trust bootstrap and scheduler."""
