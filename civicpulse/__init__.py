"""
CivicPulse Service - Civic Issue Reporting Backend
==================================================

A REST service for:
1. Citizens reporting geolocated civic issues with photos
2. Government users triaging issues and resolving them with before/after evidence
3. Managing infrastructure project records
"""

__version__ = "1.0.0"
