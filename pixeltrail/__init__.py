"""pixeltrail - first-party web analytics backend."""
