"""Response analysis: deterministic literal matching of domains and brands in provider answers."""
