# FlightLedger services
