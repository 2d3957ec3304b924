"""Wizard core: step catalog, resolver, merge engine, reconciliation and flow service."""
