"""HTTP API for the query tracker."""
