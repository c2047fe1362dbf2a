"""Bounded-parallel batch mutations against a Dataverse-style Web API."""
