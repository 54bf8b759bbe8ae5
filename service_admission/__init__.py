"""
Admission service package.

Admission control and usage metering for the API marketplace gateway.
"""
