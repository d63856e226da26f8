"""Infrastructure: configuration, logging, database, authentication and Stripe access."""
