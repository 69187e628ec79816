"""Event dispatch, routing, permissions and the reaction-role tracker."""
