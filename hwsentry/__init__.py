"""
Hardware Sentry - live price and availability scans for hardware SKUs.
"""
