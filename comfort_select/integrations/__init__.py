"""comfort-select integration clients: weather, sensors, actuators, LLM, store and sheet mirror."""
