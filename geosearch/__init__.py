"""Location-aware business search and autocomplete engine."""
