"""
Network
=======

A network is a chain of layers together with the declared shape of every
tensor between them. The chain is validated once, at construction; after that
forward, backward and update never fail on shapes.

- Forward pass: run each layer, collecting one tape per layer
- Backward pass: consume the tapes in reverse, collecting one gradient per layer
- Update: zip layers with gradients, producing a new network
- Training helpers: train (one example) and fit (epochs over examples)
- Persistence: a flat big-endian binary record of every layer's parameters

Example:
    >>> from shapenn import Network, Convolution, Pooling, Reshape, FullyConnected
    >>> from shapenn import Activation, LearningParameters, D1, D2, D3
    >>> net = Network(
    ...     [Convolution(1, 4, 3, 3), Activation('relu'), Pooling(2, 2, 2, 2),
    ...      Reshape(), FullyConnected(144, 10), Activation('softmax')],
    ...     [D2(14, 14), D3(12, 12, 4), D3(12, 12, 4), D3(6, 6, 4),
    ...      D1(144), D1(10), D1(10)])
"""

import struct

import numpy as np
from tqdm import tqdm

from .errors import ShapeError, SerializationError
from .losses import get_loss
from .utils import get_model_summary, shuffle_examples


class Network:
    """
    An immutable, shape-checked chain of layers.

    Args:
        layers: Sequence of layers, at least one
        shapes: Sequence of shapes, exactly one more than layers; shapes[i] is
            the input of layers[i] and shapes[i + 1] its output

    Raises:
        ShapeError: If the counts disagree or any layer rejects its shapes
    """

    def __init__(self, layers, shapes):
        layers = tuple(layers)
        shapes = tuple(shapes)

        if not layers:
            raise ShapeError("a network needs at least one layer")
        if len(shapes) != len(layers) + 1:
            raise ShapeError(
                f"a network of {len(layers)} layers needs {len(layers) + 1} shapes, "
                f"got {len(shapes)}")

        for i, layer in enumerate(layers):
            try:
                layer.check_shapes(shapes[i], shapes[i + 1])
            except ShapeError as e:
                raise ShapeError(f"layer {i} ({layer!r}): {e}") from e

        self.layers = layers
        self.shapes = shapes

    @property
    def input_shape(self):
        return self.shapes[0]

    @property
    def output_shape(self):
        return self.shapes[-1]

    def run_forward(self, x):
        """
        Forward pass through every layer.

        Each layer output is viewed through the declared shape before it is
        handed to the next layer.

        Args:
            x: Input tensor with the network's input shape

        Returns:
            (tapes, output)
        """
        x = np.asarray(x, dtype=np.float64)
        self.input_shape.check(x)

        tapes = []
        for layer, shape in zip(self.layers, self.shapes[1:]):
            tape, x = layer.forward(x)
            tapes.append(tape)
            x = np.reshape(x, shape.dims)

        return tapes, x

    def run_backward(self, tapes, grad_output):
        """
        Backward pass through every layer in reverse order.

        Args:
            tapes: Tapes returned by run_forward
            grad_output: dLoss/doutput with the network's output shape

        Returns:
            (gradients, grad_input): one gradient per layer in layer order
            (None for layers without parameters) and dLoss/dinput
        """
        grad = np.asarray(grad_output, dtype=np.float64)
        self.output_shape.check(grad)

        gradients = [None] * len(self.layers)
        for i in reversed(range(len(self.layers))):
            gradients[i], grad = self.layers[i].backward(tapes[i], grad)
            grad = np.reshape(grad, self.shapes[i].dims)

        return gradients, grad

    def apply_update(self, gradients, learning):
        """
        Update every layer with its gradient.

        Args:
            gradients: One gradient per layer, as returned by run_backward
            learning: LearningParameters

        Returns:
            A new Network; this one is unchanged
        """
        layers = [layer.update(learning, gradient)
                  for layer, gradient in zip(self.layers, gradients)]
        return Network(layers, self.shapes)

    def scale(self, factor):
        """A new Network with every layer's parameters multiplied by factor."""
        return Network([layer.scale(factor) for layer in self.layers], self.shapes)

    def average(self, other):
        """
        Average the parameters (and momenta) of two networks of one topology.

        Raises:
            ShapeError: If the networks differ in shapes or layers
        """
        if self.shapes != other.shapes or len(self.layers) != len(other.layers):
            raise ShapeError(f"cannot average {self!r} with {other!r}")
        layers = [layer.average(theirs) for layer, theirs in zip(self.layers, other.layers)]
        return Network(layers, self.shapes)

    def run_net(self, x):
        """Forward pass, discarding the tapes."""
        _, output = self.run_forward(x)
        return output

    def train(self, learning, x, target, loss='quadratic'):
        """
        Train on a single example.

        Args:
            learning: LearningParameters
            x: Input tensor
            target: Target tensor with the network's output shape
            loss: Loss name or Loss instance (default: 'quadratic')

        Returns:
            (new_network, loss_value) where loss_value is measured before the update
        """
        loss_fn = get_loss(loss)
        target = np.asarray(target, dtype=np.float64)
        self.output_shape.check(target)

        tapes, output = self.run_forward(x)
        loss_value = float(loss_fn.forward(output, target))
        gradients, _ = self.run_backward(tapes, loss_fn.backward(output, target))

        return self.apply_update(gradients, learning), loss_value

    def fit(self, examples, learning, epochs=1, loss='quadratic', shuffle=True,
            verbose=True):
        """
        Train example by example over several epochs.

        Args:
            examples: Sequence of (input, target) pairs
            learning: LearningParameters
            epochs: Number of passes over the examples
            loss: Loss name or Loss instance (default: 'quadratic')
            shuffle: Visit the examples in random order each epoch
            verbose: Show a progress bar and print a summary line per epoch

        Returns:
            (trained_network, history) with history['loss'] holding the mean
            loss of every epoch
        """
        examples = list(examples)
        if not examples:
            raise ValueError("fit needs at least one example")

        loss_fn = get_loss(loss)
        history = {'loss': []}
        network = self

        for epoch in range(epochs):
            epoch_loss = 0.0
            n_samples = 0

            # Progress bar for examples
            if verbose:
                pbar = tqdm(shuffle_examples(examples, shuffle),
                            total=len(examples), desc=f"Epoch {epoch+1}/{epochs}")
            else:
                pbar = shuffle_examples(examples, shuffle)

            for x, target in pbar:
                network, loss_value = network.train(learning, x, target, loss_fn)
                epoch_loss += loss_value
                n_samples += 1

                if verbose:
                    pbar.set_postfix({'loss': f'{epoch_loss/n_samples:.4f}'})

            avg_loss = epoch_loss / n_samples
            history['loss'].append(avg_loss)

            if verbose:
                print(f"Epoch {epoch+1}/{epochs} - Loss: {avg_loss:.4f}")

        return network, history

    def summary(self):
        """Print the layers, their output shapes and parameter counts."""
        text, total_params = get_model_summary(self.layers, self.shapes)
        print(text)
        return total_params

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_bytes(self):
        """
        Encode every layer's parameters.

        Each parameter record is an 8-byte big-endian element count followed
        by that many big-endian IEEE-754 doubles. Layers are written in order;
        layers without parameters write nothing. Momentum is not stored.
        """
        chunks = []
        for layer in self.layers:
            for record in layer.records():
                values = np.asarray(record, dtype='>f8').ravel()
                chunks.append(struct.pack('>q', values.size))
                chunks.append(values.tobytes())
        return b''.join(chunks)

    @classmethod
    def from_bytes(cls, template, data):
        """
        Decode parameters written by to_bytes into a copy of template.

        Args:
            template: Network with the same layers and shapes as the one saved
            data: Bytes produced by to_bytes

        Returns:
            A new Network with the loaded parameters and zero momentum

        Raises:
            SerializationError: If a record has the wrong number of elements,
                the data is truncated, or bytes are left over
        """
        data = bytes(data)
        offset = 0
        layers = []

        for i, layer in enumerate(template.layers):
            records = []
            for expected in layer.record_sizes():
                if len(data) - offset < 8:
                    raise SerializationError(f"layer {i}: data ends before the record header")
                (count,) = struct.unpack_from('>q', data, offset)
                offset += 8

                if count != expected:
                    raise SerializationError(
                        f"layer {i} ({layer!r}): Vector of incorrect size, "
                        f"expected {expected} values, found {count}")
                if len(data) - offset < 8 * count:
                    raise SerializationError(f"layer {i}: data ends inside a record")

                records.append(np.frombuffer(data, dtype='>f8', count=count, offset=offset)
                               .astype(np.float64))
                offset += 8 * count

            layers.append(layer.from_records(records) if records else layer)

        if offset != len(data):
            raise SerializationError(f"{len(data) - offset} trailing bytes after the last record")

        return cls(layers, template.shapes)

    def save(self, filepath):
        """
        Save parameters to file.

        Args:
            filepath: Path to the output file
        """
        with open(filepath, 'wb') as f:
            f.write(self.to_bytes())
        print(f"Model saved to {filepath}")

    @classmethod
    def load(cls, template, filepath):
        """
        Load parameters from file into a copy of template.

        Args:
            template: Network with the same layers and shapes as the one saved
            filepath: Path to a file written by save
        """
        with open(filepath, 'rb') as f:
            network = cls.from_bytes(template, f.read())
        print(f"Model loaded from {filepath}")
        return network

    def __len__(self):
        return len(self.layers)

    def __repr__(self):
        layers = ', '.join(repr(layer) for layer in self.layers)
        return f"Network([{layers}], {self.input_shape!r} -> {self.output_shape!r})"
