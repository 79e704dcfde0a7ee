"""Configuration module - Environment settings and business constants."""
