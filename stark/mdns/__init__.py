"""Multicast DNS service zones, a responder and a query client."""