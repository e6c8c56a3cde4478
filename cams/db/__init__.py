"""CAMS persistence: schema, connections and seed data."""
