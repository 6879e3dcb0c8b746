"""Request pipeline: intent analysis, action resolution, function selection and execution, model routing, response assembly."""
