"""Job lifecycle, admission control and retry coordination."""
