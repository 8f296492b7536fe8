"""app.integrations — Client-side access to a running Checklist Platform backend.

All outbound HTTP calls go through api_client.ApiClient, never via bare
`requests` calls elsewhere.

  api_client.ApiClient        — bearer-token REST client with a QueryCache
  wizard.ChecklistWizard      — step-by-step checklist fill-in driver
"""
