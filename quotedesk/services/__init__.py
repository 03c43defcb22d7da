"""Quote workflow services: comparison, quote requests, acceptance, email and polling."""
