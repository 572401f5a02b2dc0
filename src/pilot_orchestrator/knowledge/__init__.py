"""Knowledge module - Project index and context preparation."""
