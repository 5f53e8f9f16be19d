"""Read API package for the trend cache."""
