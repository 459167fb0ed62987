"""
API Endpoint URL Constants

This module defines the URL paths served by the station operator application.

These URLs are relative paths and are prefixed by the mount point of the
operator application (`/operator`) in `app/main.py`.
"""

# -------------------------------
# Dispatch
# -------------------------------
URL_DISPATCH = "/station/dispatch"
URL_DISPATCH_BOARD = "/station/dispatch/board"
URL_DISPATCH_PASSENGER_DROP = "/station/dispatch/passenger_drop"
URL_DISPATCH_PERMIT = "/station/dispatch/permit"
URL_DISPATCH_PAYMENT = "/station/dispatch/payment"
URL_DISPATCH_DEPARTURE_ORDER = "/station/dispatch/departure_order"
URL_DISPATCH_EXIT = "/station/dispatch/exit"

# -------------------------------
# Service charges
# -------------------------------
URL_SERVICE_CHARGE = "/station/dispatch/charge"
URL_SERVICE_CHARGE_TOTAL = "/station/dispatch/charge/total"

# -------------------------------
# Registry views
# -------------------------------
URL_SERVICE_TYPE = "/station/service_type"
URL_VEHICLE_ELIGIBILITY = "/station/vehicle/eligibility"
