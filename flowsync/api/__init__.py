"""HTTP sidecar exposing the reconciliation controller to a desktop front end."""
