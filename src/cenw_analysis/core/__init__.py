"""
Core data preparation layer.

This package contains:
- codebook: declarative recoding rules (nominal, ordinal, ratio, Likert templates)
- recoder: raw codes -> labelled categoricals / derived numbers
- composite: mean-of-items scale scores with an explicit missing-item policy
- waves: W1/W2 participation partition and the both-waves cohort
- consistency: per-variable W1 vs W2 agreement and stability ranking
- report: summary aggregation and text/table rendering
- data_loader: SPSS/Excel/CSV input and date-stamped outputs
- pipeline: the stages composed end to end
"""
