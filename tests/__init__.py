"""Test suite for PriceScout.

Tests mirror the pricescout/ package layout. Browsers, the exchange-rate
API and storage are replaced with in-process fakes so no test touches the
network.
"""
