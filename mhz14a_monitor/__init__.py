"""MH-Z14A CO2 sensor monitor over a serial link."""
