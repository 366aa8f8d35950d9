"""
Compositions
============

Small fixed compositions of layers beyond a plain chain.

- Compound: several layers side by side. Their inputs are consecutive
  windows of one input buffer and their outputs consecutive windows of one
  output buffer.
- Autoencoder: an encoder and a decoder joined through a code buffer the
  composition owns.

Builders return ready-made Sequential pipelines: a multi-layer perceptron
(feed_forward) and image/dense chains (convolutional, deconvolutional).
"""

from .buffers import DEFAULT_DTYPE, allocate
from .exceptions import ShapeMismatchError
from .layers import Activation, Container, Dense
from .random_generator import ensure_generator
from .sequential import Sequential


class Compound(Container):
    """
    Layers placed side by side over one input and one output buffer.

    Layer k reads the input window starting after the inputs of layers
    0..k-1 and writes the output window starting after their outputs.

    Args:
        layers: Non-empty list of layers
        create_io: Allocate own input and output buffers (default: False)
    """

    kind = 'compound'

    def __init__(self, layers, create_io=False, registry=None):
        layers = list(layers)
        super().__init__(layers, sum(layer.input_size for layer in layers) or 1,
                         sum(layer.output_size for layer in layers) or 1, registry=registry)
        self.create_io = create_io

        self.input_offsets = []
        self.output_offsets = []
        input_offset = output_offset = 0
        for layer in self.layers:
            self.input_offsets.append(input_offset)
            self.output_offsets.append(output_offset)
            input_offset += layer.input_size
            output_offset += layer.output_size

        if create_io:
            self._create_own_io()

    def _segments(self):
        return zip(self.layers, self.input_offsets, self.output_offsets)

    def _on_wired(self):
        for layer, input_offset, output_offset in self._segments():
            layer.set_input_and_output(self.input, self.input_offset + input_offset,
                                       self.output, self.output_offset + output_offset)

    def _forward(self, learning):
        for layer in self.layers:
            layer.feed(learning)

    def _backward(self, output_error, output_error_offset, input_error, input_error_offset, learning):
        for layer, input_offset, output_offset in self._segments():
            layer.back_propagate(output_error, output_error_offset + output_offset,
                                 input_error, input_error_offset + input_offset, learning)

    def _rebuild(self, layers):
        return Compound(layers, create_io=self.create_io, registry=self.registry)

    def __repr__(self):
        inner = ', '.join(repr(layer) for layer in self.layers)
        return f"Compound([{inner}])"


class Autoencoder(Container):
    """
    Encoder and decoder joined through an internal code buffer.

    Args:
        encoder: Layer mapping the input to the code
        decoder: Layer mapping the code back to the output
        create_io: Allocate own input and output buffers (default: False)

    The code of the latest feed is available as ``code``.
    """

    kind = 'autoencoder'

    def __init__(self, encoder, decoder, create_io=False, registry=None):
        if encoder.output_size != decoder.input_size:
            raise ShapeMismatchError(
                f"Encoder outputs {encoder.output_size} entries but decoder expects {decoder.input_size}")
        super().__init__([encoder, decoder], encoder.input_size, decoder.output_size, registry=registry)
        self.create_io = create_io
        self.code_size = encoder.output_size
        self._code = None
        self._code_error = None
        if create_io:
            self._create_own_io()

    @property
    def encoder(self):
        return self.layers[0]

    @property
    def decoder(self):
        return self.layers[1]

    @property
    def code(self):
        self._check_connected()
        return self._code

    def _on_wired(self):
        if self._code is None:
            self._code = allocate(self.code_size, self.dtype)
            self._code_error = allocate(self.code_size, self.dtype)
        self.encoder.set_input_and_output(self.input, self.input_offset, self._code, 0)
        self.decoder.set_input_and_output(self._code, 0, self.output, self.output_offset)

    def encode(self, learning=False):
        """Feed the encoder only and return the code."""
        self._check_connected()
        self.encoder.feed(learning)
        return self._code

    def _forward(self, learning):
        self.encoder.feed(learning)
        self.decoder.feed(learning)

    def _backward(self, output_error, output_error_offset, input_error, input_error_offset, learning):
        self.decoder.back_propagate(output_error, output_error_offset, self._code_error, 0, learning)
        self.encoder.back_propagate(self._code_error, 0, input_error, input_error_offset, learning)

    def _rebuild(self, layers):
        encoder, decoder = layers
        return Autoencoder(encoder, decoder, create_io=self.create_io, registry=self.registry)

    def __repr__(self):
        return f"Autoencoder({self.encoder!r}, {self.decoder!r})"


# ============================================================================
# Builders
# ============================================================================

def feed_forward(inputs, outputs, hidden_sizes=(), classification=False, alpha=0.1,
                 create_io=False, rng=None, dtype=DEFAULT_DTYPE, registry=None):
    """
    Build a multi-layer perceptron as a Sequential.

    Every hidden layer is a biased Dense followed by a leaky ReLU. The output
    layer is a biased Dense, followed by a softmax when ``classification``
    is set and left linear otherwise.

    Args:
        inputs: Number of inputs
        outputs: Number of outputs
        hidden_sizes: Sizes of the hidden layers, in order (default: none)
        classification: End with a softmax (default: False)
        alpha: Leaky ReLU slope of the hidden layers (default: 0.1)
        create_io: Allocate own input and output buffers
        rng: RandomGenerator (or seed) for the initial weights

    Example:
        >>> model = feed_forward(4, 3, hidden_sizes=[16, 8], classification=True, rng=0)
    """
    rng = ensure_generator(rng)
    sizes = [inputs] + list(hidden_sizes)
    layers = []
    for fan_in, fan_out in zip(sizes, sizes[1:]):
        layers.append(Dense(fan_in, fan_out, rng=rng, dtype=dtype, registry=registry))
        layers.append(Activation(fan_out, 'leaky_relu', dtype=dtype, registry=registry, alpha=alpha))
    layers.append(Dense(sizes[-1], outputs, rng=rng, dtype=dtype, registry=registry))
    if classification:
        layers.append(Activation(outputs, 'softmax', dtype=dtype, registry=registry))
    return Sequential(layers, create_io=create_io, registry=registry)


def convolutional(image_part, dense_part, create_io=False, registry=None):
    """
    Chain an image-processing part (convolutions, pooling) into a dense part.

    Images are already flat channel-major buffers, so the image part's
    output feeds the dense part directly.

    Raises:
        ShapeMismatchError: If the image part's output size differs from the
            dense part's input size.
    """
    if image_part.output_size != dense_part.input_size:
        raise ShapeMismatchError(
            f"Image part outputs {image_part.output_size} entries but the dense part expects "
            f"{dense_part.input_size}")
    return Sequential([image_part, dense_part], create_io=create_io, registry=registry)


def deconvolutional(dense_part, image_part, create_io=False, registry=None):
    """
    Chain a dense part into an image-processing part (the mirror of ``convolutional``).

    The dense part's output is read as a channel-major image by the image part.

    Raises:
        ShapeMismatchError: If the dense part's output size differs from the
            image part's input size.
    """
    if dense_part.output_size != image_part.input_size:
        raise ShapeMismatchError(
            f"Dense part outputs {dense_part.output_size} entries but the image part expects "
            f"{image_part.input_size}")
    return Sequential([dense_part, image_part], create_io=create_io, registry=registry)
