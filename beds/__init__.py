"""Bed and mortuary compartment allocation app.

This package contains the allocation core (scope, inventory, eligibility,
allocation engine and aggregation services) together with the models,
serializers, views and route registrations exposing it to the front-end.
"""
