"""Configuration, persistence, override records and the merged read model."""
