"""HTTP surface for driving flow runs from the editor."""
