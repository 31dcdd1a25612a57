"""Location, image and AI-provider services used by the API and the orchestrators."""
