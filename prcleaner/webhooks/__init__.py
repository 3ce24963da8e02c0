"""Azure DevOps service hook intake."""
