"""Tool derivation: turning API descriptions into callable tool rows."""
