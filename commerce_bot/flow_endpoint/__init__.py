"""WhatsApp Flow endpoint: envelope crypto, flow tokens and the onboarding screens."""
