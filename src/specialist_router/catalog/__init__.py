"""Packaged specialist profile catalogue (one YAML document per profile)."""
