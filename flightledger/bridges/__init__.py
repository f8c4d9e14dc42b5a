"""
FlightLedger - External bridges
- flight_data: flight-status provider
- ledger: append-only flight ledger gateway
"""
