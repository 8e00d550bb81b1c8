"""Plain data structures shared by the userphone and hub network layers."""
