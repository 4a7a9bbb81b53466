"""Ports - interfaces between the transaction domain and the outside world."""
