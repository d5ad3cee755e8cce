"""
Utility Functions for shapenn
=============================

Helper functions for:
- Targets (one-hot vectors)
- Example iteration
- Text rendering of kernels and network summaries
- Reproducibility
"""

import numpy as np


def one_hot_encode(index, length):
    """
    Build a one-hot target vector.

    Args:
        index: Position of the 1
        length: Length of the vector

    Returns:
        Vector of shape (length,)
    """
    if not 0 <= index < length:
        raise ValueError(f"index {index} is out of range for a vector of length {length}")

    one_hot = np.zeros(length, dtype=np.float64)
    one_hot[index] = 1.0
    return one_hot


def shuffle_examples(examples, shuffle=True):
    """
    Iterate over (input, target) pairs, optionally in random order.

    Args:
        examples: Sequence of (input, target) tuples
        shuffle: Whether to shuffle (uses the global NumPy random state)

    Yields:
        (input, target) tuples
    """
    examples = list(examples)

    if shuffle:
        order = np.random.permutation(len(examples))
    else:
        order = range(len(examples))

    for i in order:
        yield examples[i]


def render_ascii(matrix):
    """
    Render a 2D array as ASCII art, one string per row.

    Values map to ' ', '.', '-', '=', '#' at thresholds 0.2, 0.4, 0.6, 0.8.
    """
    def render(value):
        if value <= 0.2:
            return ' '
        if value <= 0.4:
            return '.'
        if value <= 0.6:
            return '-'
        if value <= 0.8:
            return '='
        return '#'

    return [''.join(render(value) for value in row) for row in np.asarray(matrix)]


def set_random_seed(seed):
    """Set random seed for reproducibility."""
    np.random.seed(seed)
    print(f"Random seed set to {seed}")


def get_model_summary(layers, shapes):
    """
    Generate model summary.

    Args:
        layers: List of layer objects
        shapes: Declared shapes, one more than there are layers

    Returns:
        (summary string, total parameter count)
    """
    lines = []
    lines.append("=" * 70)
    lines.append(f"{'Layer':<40} {'Output Shape':<18} {'Params':<10}")
    lines.append("=" * 70)
    lines.append(f"{'Input':<40} {shapes[0]!r:<18} {0:,}")

    total_params = 0

    for layer, shape in zip(layers, shapes[1:]):
        n_params = layer.num_params
        total_params += n_params
        lines.append(f"{layer!r:<40} {shape!r:<18} {n_params:,}")

    lines.append("=" * 70)
    lines.append(f"Total trainable parameters: {total_params:,}")
    lines.append("=" * 70)

    return '\n'.join(lines), total_params
