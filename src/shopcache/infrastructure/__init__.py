"""Infrastructure layer: durable storage backends and transports."""
