"""End-to-end demo flows on the local fork."""
