"""Canvas frontend: serves the page and the three.js renderer."""
