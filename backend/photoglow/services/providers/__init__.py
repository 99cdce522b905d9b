"""Generation provider gateways and routing.

  replicate.py:    sync image predictions (create → poll → cancel)
  kie.py:          async Sora-2 tasks, completed by webhook
  pollinations.py: credit-free preview images
  variants.py:     one input-shaping variant per provider family
  router.py:       logical model → variant → provider input
"""
