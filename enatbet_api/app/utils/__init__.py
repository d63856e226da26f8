"""Pure helpers with no database or network access."""
