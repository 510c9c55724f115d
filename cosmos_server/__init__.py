"""Annotation persistence service and tile enhancement proxy."""
