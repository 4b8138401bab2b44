"""LifeLink: emergency blood-donor matching and multi-tenant push dispatch."""
