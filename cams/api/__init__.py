"""HTTP layer: gateway factory, middleware and blueprints."""
