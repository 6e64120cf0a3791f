"""Biometric Attendance package.

Feature modules (biometrics, identities, attendance, notifications, storage)
with a thin Flask controller layer over service/repository layers.
"""
